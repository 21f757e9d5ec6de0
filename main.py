import argparse
import asyncio
import logging
import os
import signal
from pathlib import Path

from dotenv import load_dotenv

from duopow.core.assistant import Assistant
from duopow.core.config import Settings, load_settings
from duopow.core.keystore import generate_keystore, load_signer
from duopow.core.messages import Messages
from duopow.core.profile_client import ProfileClient
from duopow.core.registry import RegistryClient
from duopow.transports.telegram_bot import TelegramTransport

log = logging.getLogger("duopow")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="duopow")
    sub = parser.add_subparsers(dest="command", required=True)

    keystore = sub.add_parser("generate-keystore", help="create an encrypted signing key")
    keystore.add_argument("-d", "--dir", default="./keystore/")
    keystore.add_argument("-p", "--password", default=None)

    run = sub.add_parser("run", help="run the Telegram bot")
    run.add_argument("-k", "--keystore", default=None)
    run.add_argument("-p", "--password", default=None)
    run.add_argument("-t", "--tg-token", default=None)
    run.add_argument("-c", "--contract", default=None)
    return parser


async def run(settings: Settings):
    account = load_signer(settings.keystore, settings.password)
    profiles = ProfileClient(base_url=settings.api_url, timeout=settings.http_timeout)
    registry = RegistryClient.from_rpc(
        settings.rpc_url,
        contract_address=settings.contract,
        account=account,
        chain_id=settings.chain_id,
    )
    assistant = Assistant(
        profiles=profiles,
        registry=registry,
        messages=Messages(override_path=settings.messages_path),
    )
    telegram_transport = TelegramTransport(assistant, settings.tg_token)

    stop_event = asyncio.Event()

    def _signal_handler(*_):
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())

    log.info("Starting bot")
    telegram_task = asyncio.create_task(telegram_transport.start())

    await stop_event.wait()

    await telegram_transport.stop()
    await telegram_task
    await assistant.close()


def main(argv=None):
    load_dotenv()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s :: %(message)s",
    )

    if args.command == "generate-keystore":
        password = args.password
        if password is None:
            password = os.getenv("DUOPOW_PASSWORD", "")
        path = generate_keystore(Path(args.dir), password)
        print(path)
        return

    settings = load_settings(
        tg_token=args.tg_token,
        keystore=args.keystore,
        password=args.password,
        contract=args.contract,
    )
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()

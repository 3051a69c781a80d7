import asyncio
import logging
import os
import signal
from typing import Dict, Iterable, Optional, Sequence

from dotenv import load_dotenv

from core.dispatcher import Dispatcher
from core.handlers import BotContext
from core.identity import (
    create_signer,
    get_encryption_key_from_hex,
    log_agent_details,
    validate_xmtp_env,
)
from transports.bridge_process import BridgeProcess, default_bridge_command
from transports.xmtp_bridge import BridgeError, XmtpBridgeClient

log = logging.getLogger("keycheck")


def validate_environment(names: Iterable[str]) -> Dict[str, str]:
    values = {name: os.getenv(name, "").strip() for name in names}
    missing = [name for name, value in values.items() if not value]
    if missing:
        for name in missing:
            log.error("Missing environment variable: %s", name)
        raise SystemExit("Missing required environment variables.")
    return values


def _call_timeout() -> float:
    raw = os.getenv("COLLABORATOR_TIMEOUT", "30")
    try:
        return max(float(raw), 0.0)
    except ValueError:
        raise SystemExit(f"Invalid COLLABORATOR_TIMEOUT: {raw!r}")


async def start_bridge(wallet_key: str, command: Optional[Sequence[str]] = None):
    """Return ``(base_url, process)``; ``process`` is None for an external bridge."""

    url = os.getenv("XMTP_BRIDGE_URL", "").strip()
    if url:
        return url, None
    process = BridgeProcess(
        command or default_bridge_command(),
        env={"WALLET_KEY": wallet_key, "BRIDGE_PORT": "0"},
    )
    return await process.start(), process


async def main():
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s :: %(message)s",
    )

    env = validate_environment(["WALLET_KEY", "ENCRYPTION_KEY", "XMTP_ENV"])
    try:
        xmtp_env = validate_xmtp_env(env["XMTP_ENV"])
        signer = create_signer(env["WALLET_KEY"])
        encryption_key = get_encryption_key_from_hex(env["ENCRYPTION_KEY"])
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}")
    call_timeout = _call_timeout()

    try:
        bridge_url, bridge = await start_bridge(env["WALLET_KEY"])
    except BridgeError as exc:
        raise SystemExit(f"Unable to start XMTP bridge: {exc}")

    client = XmtpBridgeClient(
        bridge_url,
        env=xmtp_env,
        request_timeout=call_timeout or None,
    )
    try:
        inbox_id = await client.connect(signer, encryption_key)
    except Exception as exc:
        await client.close()
        if bridge is not None:
            await bridge.close()
        raise SystemExit(f"Unable to create XMTP client: {exc}")

    log.info("XMTP node-sdk: v%s", client.sdk_version)
    log_agent_details(signer.address, inbox_id, xmtp_env)

    ctx = BotContext(
        client=client,
        inbox_id=inbox_id,
        sdk_version=client.sdk_version,
        call_timeout=call_timeout or None,
    )
    dispatcher = Dispatcher(ctx)

    stop_event = asyncio.Event()

    def _signal_handler(*_):
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())

    try:
        log.info("Syncing conversations...")
        await client.sync_conversations()

        dispatch_task = asyncio.create_task(dispatcher.run(stop_event=stop_event))
        stop_task = asyncio.create_task(stop_event.wait())
        done, _ = await asyncio.wait(
            {dispatch_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
        )

        stop_task.cancel()
        if dispatch_task not in done:
            dispatch_task.cancel()
        try:
            await dispatch_task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            log.exception("Message stream failed: %s", exc)
            raise SystemExit(1)
        else:
            log.info("Message stream ended")
    finally:
        await client.close()
        if bridge is not None:
            await bridge.close()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()

"""Main entry point for switchboard.

Sets up logging in two phases (defaults, then settings-driven), builds
a Bot from settings, mounts plugins, and runs the signal-cli transport
until SIGTERM/SIGINT.

Key functions:
    main: Async entry point.
    run: Synchronous wrapper for the ``switchboard`` console script.
"""

import asyncio
import signal
import sys

import structlog

from .logging_config import setup_logging


async def main():
    """Main async entry point."""
    setup_logging()
    logger = structlog.get_logger("switchboard")

    from . import __version__
    from .bot import Bot
    from .config import get_settings
    from .plugin_loader import PluginLoader
    from .transport import SignalTransport

    logger.info("switchboard_starting", version=__version__)

    settings = get_settings()
    setup_logging(settings)

    bot = Bot(settings.bot_config)
    loader = PluginLoader(
        plugins_dir=settings.plugins_dir,
        allowlist=settings.plugin_allowlist,
        settings=settings.plugin_settings,
    )
    loader.discover_and_load()
    loader.install_all(bot)

    transport = SignalTransport(settings.signal_api_url, account=settings.account)

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def handle_shutdown(sig):
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, handle_shutdown, sig)
        except NotImplementedError:
            # Windows: add_signal_handler not supported
            if sig == signal.SIGINT:
                signal.signal(signal.SIGINT, lambda s, f: handle_shutdown(signal.SIGINT))

    try:
        await transport.start()
        transport.attach(bot)
        if bot.config.pairing is not None and not transport.account:
            if await transport.link_device(bot):
                # Account shows up once the link is scanned on the phone
                await transport.refresh_account()
                transport.attach(bot)

        listen_task = asyncio.create_task(transport.listen(bot))
        await shutdown_event.wait()

        listen_task.cancel()
        try:
            await listen_task
        except asyncio.CancelledError:
            pass
    except Exception as e:
        logger.error("bot_error", error=str(e))
        raise
    finally:
        await transport.stop()
        logger.info("switchboard_stopped")


def run():
    """Synchronous entry point for the ``switchboard`` console script."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except SystemExit as e:
        sys.exit(e.code)


if __name__ == "__main__":
    run()

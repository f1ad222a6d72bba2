"""Per-command ownership of the child process and the open log stream."""

import asyncio
import signal

from .graphql import LogSubscription

SHUTDOWN_SIGNALS = ("SIGUSR2", "SIGTERM", "SIGINT")


class Session:
    """Holds the single child process and the single log subscription of a command.

    Only the most recent subscription is tracked: `subscribe` replaces the
    handle without cancelling the previous stream.
    """

    def __init__(self):
        self.process: asyncio.subprocess.Process | None = None
        self.subscription: LogSubscription | None = None
        self.cancelled = False

    def subscribe(self, url: str, query: str, **kwargs) -> LogSubscription:
        self.subscription = LogSubscription.start(url, query, **kwargs)
        return self.subscription

    def cancel(self):
        """Stop the log stream and terminate the child process, if any."""
        self.cancelled = True
        if self.subscription is not None:
            self.subscription.cancel()
        if self.process is not None and self.process.returncode is None:
            try:
                self.process.terminate()
            except ProcessLookupError:
                pass

    def install_signal_handlers(self, task: asyncio.Task | None = None) -> list[int]:
        """Cancel the session and ``task`` when a shutdown signal arrives.

        nodemon restarts `develop` with SIGUSR2. Returns the signals that were
        hooked; none on platforms without loop signal handlers.
        """
        loop = asyncio.get_running_loop()
        task = task or asyncio.current_task()

        def shutdown():
            self.cancel()
            if task is not None:
                task.cancel()

        hooked = []
        for name in SHUTDOWN_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is None:
                continue
            try:
                loop.add_signal_handler(signum, shutdown)
            except (NotImplementedError, RuntimeError):
                continue
            hooked.append(signum)
        return hooked

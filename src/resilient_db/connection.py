"""
Connection handle: one driver connection plus its error listener and release.
"""

from typing import Any, Awaitable, Callable, Optional

from resilient_db.driver import Args, ResultSet
from resilient_db.exceptions import StaleConnectionError

ErrorListener = Callable[["ConnectionHandle", BaseException], Awaitable[None]]
ReleaseCallback = Callable[["ConnectionHandle"], Awaitable[None]]


class ConnectionHandle:
    """
    Exclusive, single-use lease on one driver connection.

    When the driver reports a connection-level failure during ``query``, the
    attached error listener fires once and the handle is marked broken; the
    failing call still raises, so the caller never hangs. ``release`` detaches
    the listener before handing the connection back, so an error surfacing
    after release is never handled twice.

    Attributes:
        driver: DriverAdapter that executes statements
        connection: The underlying driver connection
        broken: Whether a connection-level error was seen
        released: Whether the lease has ended
    """

    def __init__(
        self,
        driver,
        connection: Any,
        on_release: ReleaseCallback,
        on_error: Optional[ErrorListener] = None,
    ):
        self.driver = driver
        self.connection = connection
        self.broken = False
        self.released = False
        self._on_release = on_release
        self._error_listener = on_error

    @property
    def listening(self) -> bool:
        return self._error_listener is not None

    async def query(self, sql: str, args: Args = None) -> ResultSet:
        """
        Execute one statement on this connection.

        Raises:
            StaleConnectionError: If the handle was released or its connection failed
        """
        if self.released:
            raise StaleConnectionError("Connection handle already released")
        if self.broken:
            raise StaleConnectionError("Connection failed and cannot be reused")

        try:
            return await self.driver.execute(self.connection, sql, args)
        except Exception as e:
            if self.driver.is_connection_error(e):
                await self._fail(e)
            raise

    async def _fail(self, error: BaseException) -> None:
        self.broken = True
        listener, self._error_listener = self._error_listener, None
        if listener is not None:
            await listener(self, error)

    async def release(self) -> None:
        """Detach the error listener and hand the connection back. Idempotent."""
        if self.released:
            return
        self.released = True
        self._error_listener = None
        await self._on_release(self)

    async def __aenter__(self) -> "ConnectionHandle":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()

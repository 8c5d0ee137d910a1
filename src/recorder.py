import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

import obsws_python as obs
from obsws_python.error import OBSSDKError, OBSSDKRequestError
from websocket import WebSocketException

from errors import ConnectionLost, SaveRequestFailure

logger = logging.getLogger(__name__)

ConnectionListener = Callable[[bool, Optional[str]], None]

REPLAY_BUFFER_OUTPUT = "Replay Buffer"


class RecordingController(ABC):
    """
    Narrow view of the rolling-buffer recorder.

    ``request_save`` only acknowledges the request; the clip's file name is
    discovered afterwards by the clip resolver. Connection changes are pushed
    to listeners registered with ``add_connection_listener``.
    """

    def __init__(self) -> None:
        self._state_lock = threading.Lock()
        self._connected = False
        self._listeners: List[ConnectionListener] = []

    @property
    def connected(self) -> bool:
        with self._state_lock:
            return self._connected

    def add_connection_listener(self, listener: ConnectionListener) -> None:
        self._listeners.append(listener)

    @abstractmethod
    def connect(self) -> None:
        """Open the connection or raise ``ConnectionLost``."""

    @abstractmethod
    def request_save(self) -> None:
        """Ask the recorder to persist its buffer; raise on failure."""

    @abstractmethod
    def close(self) -> None:
        pass

    def start_buffer(self) -> None:
        raise NotImplementedError

    def stop_buffer(self) -> None:
        raise NotImplementedError

    def buffer_active(self) -> bool:
        raise NotImplementedError

    def buffer_length(self) -> Optional[int]:
        return None

    def set_buffer_length(self, seconds: int) -> None:
        raise NotImplementedError

    def check_buffer_length(self, expected_seconds: int) -> Tuple[bool, str]:
        actual = self.buffer_length()
        if actual is None:
            return True, "Replay buffer length unknown."
        if actual != expected_seconds:
            return False, f"Replay buffer is {actual}s, expected {expected_seconds}s."
        return True, f"Replay buffer is {actual}s."

    def _mark_connected(self) -> None:
        self._set_connected(True, None)

    def _mark_lost(self, reason: str) -> None:
        self._set_connected(False, reason)

    def _set_connected(self, connected: bool, reason: Optional[str]) -> None:
        with self._state_lock:
            changed = self._connected != connected
            self._connected = connected
        if not changed:
            return
        if connected:
            logger.info("Recording controller connected.")
        else:
            logger.warning("Recording controller connection lost: %s", reason)
        for listener in list(self._listeners):
            try:
                listener(connected, reason)
            except Exception as exc:
                logger.exception("Connection listener failed: %s", exc)


class ObsRecordingController(RecordingController):
    """OBS Studio replay buffer driven over obs-websocket v5."""

    def __init__(self, host: str = "localhost", port: int = 4455, password: str = "", timeout: int = 3) -> None:
        super().__init__()
        self.host = host
        self.port = port
        self.password = password
        self.timeout = timeout
        self._requests: Optional[obs.ReqClient] = None
        self._events: Optional[obs.EventClient] = None

    def connect(self) -> None:
        self.close()
        try:
            self._requests = obs.ReqClient(
                host=self.host, port=self.port, password=self.password, timeout=self.timeout
            )
            self._events = obs.EventClient(
                host=self.host, port=self.port, password=self.password, timeout=self.timeout
            )
            self._events.callback.register(self.on_exit_started)
        except (OBSSDKError, OSError, WebSocketException) as exc:
            self._requests = None
            self._events = None
            self._mark_lost(str(exc))
            raise ConnectionLost(f"Cannot reach OBS at {self.host}:{self.port}: {exc}") from exc
        self._mark_connected()

    def request_save(self) -> None:
        client = self._require_client()
        try:
            client.save_replay_buffer()
        except OBSSDKRequestError as exc:
            raise SaveRequestFailure(f"OBS refused to save the replay buffer: {exc}") from exc
        except (OBSSDKError, OSError, WebSocketException) as exc:
            self._mark_lost(str(exc))
            raise ConnectionLost(str(exc)) from exc
        logger.debug("Replay buffer save requested.")

    def start_buffer(self) -> None:
        client = self._require_client()
        try:
            if not client.get_replay_buffer_status().output_active:
                client.start_replay_buffer()
                logger.info("Replay buffer started.")
        except OBSSDKRequestError as exc:
            raise SaveRequestFailure(f"OBS could not start the replay buffer: {exc}") from exc
        except (OBSSDKError, OSError, WebSocketException) as exc:
            self._mark_lost(str(exc))
            raise ConnectionLost(str(exc)) from exc

    def stop_buffer(self) -> None:
        client = self._require_client()
        try:
            if client.get_replay_buffer_status().output_active:
                client.stop_replay_buffer()
                logger.info("Replay buffer stopped.")
        except OBSSDKRequestError as exc:
            raise SaveRequestFailure(f"OBS could not stop the replay buffer: {exc}") from exc
        except (OBSSDKError, OSError, WebSocketException) as exc:
            self._mark_lost(str(exc))
            raise ConnectionLost(str(exc)) from exc

    def buffer_active(self) -> bool:
        client = self._require_client()
        try:
            return bool(client.get_replay_buffer_status().output_active)
        except (OBSSDKError, OSError, WebSocketException) as exc:
            self._mark_lost(str(exc))
            raise ConnectionLost(str(exc)) from exc

    def buffer_length(self) -> Optional[int]:
        client = self._require_client()
        try:
            settings = client.get_output_settings(REPLAY_BUFFER_OUTPUT).output_settings
        except OBSSDKRequestError as exc:
            logger.debug("Replay buffer settings unavailable: %s", exc)
            return None
        except (OBSSDKError, OSError, WebSocketException) as exc:
            self._mark_lost(str(exc))
            raise ConnectionLost(str(exc)) from exc
        value = (settings or {}).get("max_time_sec")
        return int(value) if value is not None else None

    def set_buffer_length(self, seconds: int) -> None:
        client = self._require_client()
        try:
            client.set_output_settings(REPLAY_BUFFER_OUTPUT, {"max_time_sec": int(seconds)})
        except OBSSDKRequestError as exc:
            raise SaveRequestFailure(f"OBS could not resize the replay buffer: {exc}") from exc
        except (OBSSDKError, OSError, WebSocketException) as exc:
            self._mark_lost(str(exc))
            raise ConnectionLost(str(exc)) from exc
        logger.info("Replay buffer length set to %ss.", seconds)

    def close(self) -> None:
        for client in (self._events, self._requests):
            if client is None:
                continue
            try:
                client.disconnect()
            except (OBSSDKError, OSError, WebSocketException) as exc:
                logger.debug("Error while disconnecting from OBS: %s", exc)
        self._requests = None
        self._events = None
        with self._state_lock:
            self._connected = False

    def on_exit_started(self, _data) -> None:
        self._mark_lost("OBS is shutting down")

    def _require_client(self) -> obs.ReqClient:
        if self._requests is None or not self.connected:
            raise ConnectionLost("Not connected to OBS.")
        return self._requests

# 传输层: 唯一持有 (base_url, token) 以及由它们派生出的 HTTP 会话
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional
import requests
import urllib3
from requests.adapters import BaseAdapter
from urllib3.exceptions import InsecureRequestWarning

from akclient.core.config import Settings, get_settings
from akclient.client.preferences import Preferences

logger = logging.getLogger(__name__)

# 旧版单服务器配置使用的键, 同时作为最近一次使用的地址
SERVER_URL_KEY = "serverURL"


@dataclass(frozen=True)
class Transport:
    """An HTTP session bound to one base URL and one token.

    Never mutated; TransportManager swaps in a new instance instead.
    """
    base_url: str
    token_provider: Callable[[], Optional[str]]
    session: requests.Session = field(repr=False)
    timeout: float = 30.0

    @property
    def token(self) -> Optional[str]:
        return self.token_provider()

    def auth_headers(self) -> Dict[str, str]:
        token = self.token_provider()
        if token:
            return {"Authorization": f"Bearer {token}"}
        return {}


class TransportManager:
    def __init__(
        self,
        preferences: Preferences,
        settings: Optional[Settings] = None,
        mounts: Optional[Dict[str, BaseAdapter]] = None,
    ):
        self.preferences = preferences
        self.settings = settings or get_settings()
        # 测试或自定义重试策略时挂载到每个新会话上
        self._mounts = dict(mounts or {})
        self._lock = threading.Lock()

        self._base_url: str = preferences.get_str(SERVER_URL_KEY)
        self._token: Optional[str] = None
        self._transport = self._build_transport()

    # --- 写操作: 更新后整体重建 ---

    def set_token(self, token: Optional[str]):
        with self._lock:
            self._token = token
            self._transport = self._build_transport()
        logger.debug("Bearer token %s", "set" if token else "cleared")

    def update_base_url(self, url: str):
        with self._lock:
            self._base_url = url
            self._transport = self._build_transport()
            # 持久化也在锁内, 保证磁盘上的值与内存一致
            self.preferences.set(SERVER_URL_KEY, url)
        logger.info("Base URL switched to %r", url)

    # --- 快照读取 ---

    def current_base_url(self) -> str:
        with self._lock:
            return self._base_url

    def current_token(self) -> Optional[str]:
        with self._lock:
            return self._token

    def current_transport(self) -> Transport:
        with self._lock:
            return self._transport

    @property
    def is_configured(self) -> bool:
        return bool(self.current_base_url())

    def test_connection(self, url: str) -> bool:
        """GET {url}/health without credentials; any 2xx counts as reachable."""
        session = self.current_transport().session
        health_url = f"{url.rstrip('/')}/health"
        try:
            resp = session.get(health_url, timeout=self.settings.PROBE_TIMEOUT)
        except (requests.RequestException, ValueError) as e:
            logger.info("Connection test to %s failed: %s", health_url, e)
            return False

        ok = 200 <= resp.status_code < 300
        if not ok:
            logger.info("Connection test to %s returned %s", health_url, resp.status_code)
        return ok

    def _build_transport(self) -> Transport:
        # 调用方需持有 self._lock
        captured_token = self._token
        return Transport(
            base_url=self._base_url,
            token_provider=lambda: captured_token,
            session=self._make_session(),
            timeout=self.settings.REQUEST_TIMEOUT,
        )

    def _make_session(self) -> requests.Session:
        session = requests.Session()
        if self.settings.ALLOW_SELF_SIGNED:
            session.verify = False
            urllib3.disable_warnings(InsecureRequestWarning)
        for prefix, adapter in self._mounts.items():
            session.mount(prefix, adapter)
        return session

# 服务器档案管理: 多个命名的服务器地址, 以及当前激活的是哪一个
import logging
import threading
from typing import Callable, Dict, List, Optional
from urllib.parse import urlsplit
from pydantic import ValidationError

from akclient.core.models import ServerProfile
from akclient.client.preferences import Preferences
from akclient.client.transport import SERVER_URL_KEY, TransportManager

logger = logging.getLogger(__name__)

SERVERS_KEY = "savedServers"
ACTIVE_SERVER_KEY = "activeServerId"

# 事件名
SERVERS_CHANGED = "servers_changed"
ACTIVE_CHANGED = "active_changed"

ProfileListener = Callable[[str, Optional[ServerProfile]], None]


def strip_trailing_slash(url: str) -> str:
    return url[:-1] if url.endswith("/") else url


def server_name_from_url(url: str) -> str:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        host = None
    if host:
        if host in ("localhost", "127.0.0.1"):
            return "Local"
        return host
    return "Server"


class ProfileStore:
    def __init__(self, preferences: Preferences, transport: TransportManager):
        self.preferences = preferences
        self.transport = transport
        self._lock = threading.RLock()
        self._listeners: List[ProfileListener] = []

        self.profiles: List[ServerProfile] = []
        self.active_server_id: Optional[str] = None
        # 最近一次连接探测的结果, key 为档案 id
        self.server_statuses: Dict[str, bool] = {}
        self.load_profiles()

    # --- 监听 ---

    def subscribe(self, listener: ProfileListener):
        self._listeners.append(listener)

    def unsubscribe(self, listener: ProfileListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: str, profile: Optional[ServerProfile] = None):
        for listener in list(self._listeners):
            listener(event, profile)

    # --- 读取 ---

    @property
    def servers(self) -> List[ServerProfile]:
        with self._lock:
            return list(self.profiles)

    @property
    def active_server(self) -> Optional[ServerProfile]:
        with self._lock:
            return self._find(self.active_server_id)

    def get(self, profile_id: str) -> Optional[ServerProfile]:
        with self._lock:
            return self._find(profile_id)

    def get_profile_by_name(self, name: str) -> Optional[ServerProfile]:
        with self._lock:
            for p in self.profiles:
                if p.name == name:
                    return p
            return None

    def _find(self, profile_id: Optional[str]) -> Optional[ServerProfile]:
        if profile_id is None:
            return None
        for p in self.profiles:
            if p.id == profile_id:
                return p
        return None

    # --- 持久化 ---

    def load_profiles(self):
        raw = self.preferences.get(SERVERS_KEY) or []
        try:
            profiles = [ServerProfile.model_validate(p) for p in raw]
        except (ValidationError, TypeError) as e:
            logger.error("加载服务器档案失败: %s", e)
            profiles = []

        active_id = self.preferences.get(ACTIVE_SERVER_KEY)
        with self._lock:
            self.profiles = profiles
            self.active_server_id = active_id if isinstance(active_id, str) else None

    def save_profiles(self):
        data = [p.model_dump(mode="json", by_alias=True) for p in self.profiles]
        self.preferences.set(SERVERS_KEY, data)

    # --- 修改 ---

    def add(self, name: str, url: str) -> ServerProfile:
        profile = ServerProfile(name=name, url=strip_trailing_slash(url))
        with self._lock:
            self.profiles.append(profile)
            self.save_profiles()
            is_first = len(self.profiles) == 1
        logger.info("Added server %r (%s)", profile.name, profile.url)
        self._emit(SERVERS_CHANGED, profile)

        # 第一个档案自动激活
        if is_first:
            self.switch_to(profile)
        return profile

    def remove(self, profile: ServerProfile):
        promoted: Optional[ServerProfile] = None
        with self._lock:
            self.profiles = [p for p in self.profiles if p.id != profile.id]
            self.server_statuses = {k: v for k, v in self.server_statuses.items() if k != profile.id}
            was_active = self.active_server_id == profile.id
            if was_active:
                promoted = self.profiles[0] if self.profiles else None
                self.active_server_id = promoted.id if promoted else None
                self.preferences.set(ACTIVE_SERVER_KEY, self.active_server_id)
                # 没有剩余档案时 base URL 置空, 传输层回到未配置状态
                self.transport.update_base_url(promoted.url if promoted else "")
            self.save_profiles()

        logger.info("Removed server %r", profile.name)
        self._emit(SERVERS_CHANGED, profile)
        if was_active:
            self._emit(ACTIVE_CHANGED, promoted)

    def switch_to(self, profile: ServerProfile):
        # 只切换地址; token 的清理由监听者 (AuthSession) 负责
        with self._lock:
            self.active_server_id = profile.id
            self.preferences.set(ACTIVE_SERVER_KEY, profile.id)
            self.transport.update_base_url(profile.url)
        logger.info("Switched to server %r (%s)", profile.name, profile.url)
        self._emit(ACTIVE_CHANGED, profile)

    def update(
        self,
        profile: ServerProfile,
        name: Optional[str] = None,
        url: Optional[str] = None,
    ) -> Optional[ServerProfile]:
        with self._lock:
            target = self._find(profile.id)
            if target is None:
                return None

            changes = {}
            if name is not None:
                changes["name"] = name
            if url is not None:
                changes["url"] = strip_trailing_slash(url)
            updated = target.model_copy(update=changes)
            self.profiles = [updated if p.id == updated.id else p for p in self.profiles]
            self.save_profiles()

            url_changed = updated.url != target.url
            is_active = self.active_server_id == updated.id
            if is_active and url_changed:
                self.transport.update_base_url(updated.url)

        self._emit(SERVERS_CHANGED, updated)
        if is_active and url_changed:
            self._emit(ACTIVE_CHANGED, updated)
        return updated

    def migrate_legacy_single_server(self) -> bool:
        """Turn the old single ``serverURL`` setting into a profile, once."""
        with self._lock:
            if self.profiles:
                return False
            old_url = self.preferences.get_str(SERVER_URL_KEY)
            if not old_url:
                return False
            profile = ServerProfile(name=server_name_from_url(old_url), url=old_url)
            self.profiles.append(profile)
            self.save_profiles()

        logger.info("Migrated legacy server setting to profile %r", profile.name)
        self._emit(SERVERS_CHANGED, profile)
        self.switch_to(profile)
        return True

    # --- 连接状态 ---

    def check_server_statuses(self) -> Dict[str, bool]:
        statuses = {p.id: self.transport.test_connection(p.url) for p in self.servers}
        with self._lock:
            self.server_statuses = statuses
        return dict(statuses)

    def set_server_status(self, profile_id: str, reachable: bool) -> bool:
        with self._lock:
            # 已删除的档案不再记录状态
            if not any(p.id == profile_id for p in self.profiles):
                return False
            self.server_statuses = {**self.server_statuses, profile_id: reachable}
        return True

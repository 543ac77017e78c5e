# 登录状态机: 登录 -> (TOTP 二次验证) -> 已登录 (-> 强制修改密码)
import base64
import binascii
import json
import logging
import threading
from enum import Enum
from typing import Callable, List, Optional
from pydantic import ValidationError

from akclient.core.errors import APIError, HTTPError
from akclient.core.models import Identity, LoginResponse
from akclient.client.gateway import RequestGateway
from akclient.client.transport import TransportManager

logger = logging.getLogger(__name__)


class AuthFlowState(Enum):
    LOGGED_OUT = "logged_out"
    AWAITING_TOTP = "awaiting_totp"
    LOGGED_IN = "logged_in"


def decode_identity(token: str) -> Optional[Identity]:
    """Read the user attributes out of a JWT payload without verifying it.

    Returns None unless the token has exactly three segments and the middle
    one is base64 encoded JSON describing a user.
    """
    segments = token.split(".")
    if len(segments) != 3:
        return None

    payload = segments[1]
    payload += "=" * (-len(payload) % 4)
    try:
        # 同时接受 base64url 和标准字母表, 其余字符一律视为非法
        raw = base64.b64decode(payload.replace("-", "+").replace("_", "/"), validate=True)
        return Identity.model_validate_json(raw)
    except (binascii.Error, ValueError, ValidationError):
        return None


def describe_error(error: Exception) -> str:
    """Human readable text for an API failure, preferring the server's own message."""
    if isinstance(error, HTTPError) and error.body:
        try:
            data = json.loads(error.body)
        except ValueError:
            data = None
        if isinstance(data, dict):
            for key in ("message", "detail", "error"):
                value = data.get(key)
                if isinstance(value, str) and value:
                    return value
    return str(error) or error.__class__.__name__


class AuthSession:
    def __init__(self, gateway: RequestGateway, transport: TransportManager):
        self.gateway = gateway
        self.transport = transport
        self._lock = threading.Lock()
        self._listeners: List[Callable[["AuthSession"], None]] = []
        # 每次登出加一, 过期的登录响应据此丢弃
        self._generation = 0

        self.state = AuthFlowState.LOGGED_OUT
        self.identity: Optional[Identity] = None
        self.pending_totp_token: Optional[str] = None
        self.must_change_password = False

        self.is_loading = False
        self.error_message: Optional[str] = None
        self.setup_required = False

    @property
    def is_authenticated(self) -> bool:
        return self.state is AuthFlowState.LOGGED_IN

    @property
    def totp_required(self) -> bool:
        return self.state is AuthFlowState.AWAITING_TOTP

    def subscribe(self, listener: Callable[["AuthSession"], None]):
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[["AuthSession"], None]):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self):
        for listener in list(self._listeners):
            listener(self)

    # --- 登录 ---

    def login(self, username: str, password: str) -> bool:
        with self._lock:
            generation = self._generation
            self.is_loading = True
            self.error_message = None
        self._notify()

        try:
            resp = self.gateway.login(username, password)
        except APIError as e:
            logger.info("Login for %r failed: %s", username, e)
            self._fail(describe_error(e), reset=True, generation=generation)
            return False

        if resp.totp_required:
            if not resp.totp_token:
                self._fail("Server requested a second factor without a challenge token",
                           reset=True, generation=generation)
                return False
            # 还没有拿到真正的 token, 只记下 challenge; 旧 token 不再有效
            with self._lock:
                stale = generation != self._generation
                if not stale:
                    self.transport.set_token(None)
                    self.state = AuthFlowState.AWAITING_TOTP
                    self.pending_totp_token = resp.totp_token
                    self.identity = None
                    self.must_change_password = False
                    self.is_loading = False
            if stale:
                return self._discard(username)
            logger.info("Login for %r requires TOTP verification", username)
            self._notify()
            return True

        adopted = self._adopt(resp, generation)
        if adopted is None:
            return self._discard(username)
        if not adopted:
            self._fail("Invalid response", reset=True, generation=generation)
            return False
        logger.info("Logged in as %r", username)
        return True

    def verify_totp(self, code: str) -> bool:
        with self._lock:
            pending = self.pending_totp_token
            if self.state is not AuthFlowState.AWAITING_TOTP or not pending:
                self.error_message = "No two-factor challenge is pending"
                return False
            generation = self._generation
            self.is_loading = True
            self.error_message = None
        self._notify()

        try:
            resp = self.gateway.totp_verify(pending, code)
        except APIError as e:
            logger.info("TOTP verification failed: %s", e)
            # 保持 AWAITING_TOTP, 允许重试
            self._fail(describe_error(e), reset=False, generation=generation)
            return False

        adopted = self._adopt(resp, generation)
        if adopted is None:
            return self._discard("TOTP verification")
        if not adopted:
            self._fail("Invalid response", reset=False, generation=generation)
            return False
        return True

    def _adopt(self, resp: LoginResponse, generation: int) -> Optional[bool]:
        """Install the token from a successful login.

        Returns None when the session was logged out (e.g. by a server switch)
        while the request was in flight; the token is then thrown away.
        """
        token = resp.access_token
        if not token:
            return False

        identity = decode_identity(token)
        if identity is None:
            logger.warning("Could not decode user identity from access token")

        with self._lock:
            if generation != self._generation:
                return None
            # 先让传输层带上新 token, 再对外报告成功
            self.transport.set_token(token)
            self.state = AuthFlowState.LOGGED_IN
            self.identity = identity
            self.pending_totp_token = None
            self.must_change_password = bool(resp.must_change_password)
            self.is_loading = False
            self.error_message = None
        self._notify()
        return True

    def _discard(self, what: str) -> bool:
        logger.info("Dropping response for %r: session was reset while it was in flight", what)
        with self._lock:
            self.is_loading = False
        self._notify()
        return False

    def _fail(self, message: str, reset: bool, generation: Optional[int] = None):
        with self._lock:
            self.is_loading = False
            # 会话已被重置时, 旧错误不再相关
            stale = generation is not None and generation != self._generation
            if not stale:
                self.error_message = message
                if reset and self.state is not AuthFlowState.LOGGED_IN:
                    self.state = AuthFlowState.LOGGED_OUT
                    self.pending_totp_token = None
        if stale:
            logger.debug("Ignoring stale failure: %s", message)
        self._notify()

    # --- 登出 ---

    def logout(self):
        with self._lock:
            changed = (
                self.state is not AuthFlowState.LOGGED_OUT
                or self.identity is not None
                or self.pending_totp_token is not None
                or self.must_change_password
                or self.transport.current_token() is not None
            )
            self._generation += 1
            self.state = AuthFlowState.LOGGED_OUT
            self.identity = None
            self.pending_totp_token = None
            self.must_change_password = False
            self.error_message = None
            # 与 _adopt 在同一把锁内, 不会被进行中的登录覆盖
            self.transport.set_token(None)

        if changed:
            logger.info("Logged out")
            self._notify()

    def handle_profile_switch(self):
        # token 只对签发它的服务器有效
        self.logout()

    # --- 其他 ---

    def check_setup_status(self) -> bool:
        try:
            status = self.gateway.setup_status()
        except APIError as e:
            logger.info("Setup status check failed: %s", e)
            return self.setup_required
        with self._lock:
            self.setup_required = status.setup_required
        self._notify()
        return status.setup_required

    def change_password(self, current_password: str, new_password: str) -> bool:
        with self._lock:
            identity = self.identity
            if self.state is not AuthFlowState.LOGGED_IN or identity is None:
                self.error_message = "Not logged in"
                return False
            self.is_loading = True
            self.error_message = None

        try:
            self.gateway.change_password(identity.id, current_password, new_password)
        except APIError as e:
            logger.info("Password change failed: %s", e)
            self._fail(describe_error(e), reset=False)
            return False

        with self._lock:
            self.must_change_password = False
            self.is_loading = False
        self._notify()
        return True

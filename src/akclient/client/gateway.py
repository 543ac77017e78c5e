# 所有功能代码访问服务器的统一入口
import json
import logging
from typing import Any, Dict, Optional, Type, TypeVar
from urllib.parse import quote, urlsplit
import requests
from pydantic import BaseModel, TypeAdapter, ValidationError

from akclient.core.errors import (
    DecodeError,
    HTTPError,
    InvalidResponseError,
    InvalidURLError,
    TransportError,
)
from akclient.core.models import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    ProfileResponse,
    SetupStatusResponse,
    TotpCodeRequest,
    TotpDisableRequest,
    TotpEnableResponse,
    TotpSetupResponse,
    TotpVerifyRequest,
)
from akclient.client.transport import Transport, TransportManager

logger = logging.getLogger(__name__)

T = TypeVar("T")

API_V1 = "/api/v1"
LOGIN_PATH = f"{API_V1}/auth/login"
TOTP_VERIFY_PATH = f"{API_V1}/auth/totp/verify"
TOTP_SETUP_PATH = f"{API_V1}/auth/totp/setup"
TOTP_ENABLE_PATH = f"{API_V1}/auth/totp/enable"
TOTP_DISABLE_PATH = f"{API_V1}/auth/totp/disable"
SETUP_STATUS_PATH = f"{API_V1}/setup/status"
PROFILE_PATH = f"{API_V1}/auth/me"

# urlPathAllowed 等价的保留字符
_PATH_SAFE = "/:@!$&'()*+,;="


def _join(base_url: str, path: str) -> Optional[str]:
    if not base_url:
        return None
    url = f"{base_url}{path}"
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    return url


def _encode_body(body: Any) -> Optional[bytes]:
    if body is None:
        return None
    if isinstance(body, BaseModel):
        return body.model_dump_json(by_alias=True).encode("utf-8")
    return json.dumps(body).encode("utf-8")


class RequestGateway:
    """Typed request/response primitive on top of the current transport."""

    def __init__(self, transport_manager: TransportManager):
        self.transport_manager = transport_manager

    # --- URL 辅助 ---

    def build_url(self, path: str) -> Optional[str]:
        return _join(self.transport_manager.current_base_url(), path)

    def build_download_url(self, repo_key: str, artifact_path: str) -> Optional[str]:
        encoded = quote(artifact_path, safe=_PATH_SAFE)
        return self.build_url(
            f"{API_V1}/repositories/{repo_key}/artifacts/{encoded}/download"
        )

    # --- 请求原语 ---

    def request(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        response_model: Optional[Type[T]] = None,
    ) -> Any:
        resp = self._send(path, method, data=_encode_body(body))
        return self._decode(resp, response_model)

    def request_void(self, path: str, method: str = "POST", body: Any = None) -> None:
        self._send(path, method, data=_encode_body(body))

    def upload_multipart(
        self,
        path: str,
        file_bytes: bytes,
        file_name: str,
        extra_fields: Optional[Dict[str, Any]] = None,
        response_model: Optional[Type[T]] = None,
    ) -> Any:
        # requests 负责生成随机 boundary 和 multipart Content-Type
        files = {"file": (file_name, file_bytes, "application/octet-stream")}
        fields = {k: str(v) for k, v in (extra_fields or {}).items() if v is not None}
        resp = self._send(path, "POST", files=files, form=fields, json_body=False)
        return self._decode(resp, response_model)

    def _send(
        self,
        path: str,
        method: str,
        data: Optional[bytes] = None,
        files: Optional[dict] = None,
        form: Optional[dict] = None,
        json_body: bool = True,
    ) -> requests.Response:
        # 请求发出时捕获 transport, 之后的切换不会影响这次请求
        transport: Transport = self.transport_manager.current_transport()
        url = _join(transport.base_url, path)
        if url is None:
            raise InvalidURLError()

        headers = transport.auth_headers()
        if json_body:
            headers["Content-Type"] = "application/json"

        try:
            resp = transport.session.request(
                method,
                url,
                data=data if json_body else form,
                files=files,
                headers=headers,
                timeout=transport.timeout,
            )
        except (requests.exceptions.InvalidURL,
                requests.exceptions.MissingSchema,
                requests.exceptions.InvalidSchema) as e:
            raise InvalidURLError() from e
        except (requests.exceptions.ChunkedEncodingError,
                requests.exceptions.ContentDecodingError,
                requests.exceptions.InvalidHeader) as e:
            raise InvalidResponseError() from e
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise TransportError(f"Network error: {e}") from e

        if not isinstance(resp, requests.Response) or resp.status_code is None:
            raise InvalidResponseError()

        if not 200 <= resp.status_code < 300:
            logger.info("%s %s -> HTTP %s", method, path, resp.status_code)
            raise HTTPError(resp.status_code, resp.content or b"")

        return resp

    @staticmethod
    def _decode(resp: requests.Response, response_model: Optional[Type[T]]) -> Any:
        if response_model is None:
            if not resp.content:
                return None
            try:
                return resp.json()
            except ValueError as e:
                raise DecodeError() from e
        try:
            return TypeAdapter(response_model).validate_json(resp.content)
        except ValidationError as e:
            logger.debug("Response did not match %s: %s", response_model, e)
            raise DecodeError() from e

    # --- 认证 ---

    def login(self, username: str, password: str) -> LoginResponse:
        return self.request(
            LOGIN_PATH, "POST",
            LoginRequest(username=username, password=password),
            response_model=LoginResponse,
        )

    def totp_verify(self, totp_token: str, code: str) -> LoginResponse:
        return self.request(
            TOTP_VERIFY_PATH, "POST",
            TotpVerifyRequest(totp_token=totp_token, code=code),
            response_model=LoginResponse,
        )

    def setup_status(self) -> SetupStatusResponse:
        return self.request(SETUP_STATUS_PATH, response_model=SetupStatusResponse)

    def totp_setup(self) -> TotpSetupResponse:
        return self.request(TOTP_SETUP_PATH, "POST", response_model=TotpSetupResponse)

    def totp_enable(self, code: str) -> TotpEnableResponse:
        return self.request(
            TOTP_ENABLE_PATH, "POST", TotpCodeRequest(code=code),
            response_model=TotpEnableResponse,
        )

    def totp_disable(self, password: str, code: str):
        self.request_void(
            TOTP_DISABLE_PATH, "POST", TotpDisableRequest(password=password, code=code)
        )

    def change_password(self, user_id: str, current_password: str, new_password: str):
        self.request_void(
            f"{API_V1}/users/{user_id}/password", "POST",
            ChangePasswordRequest(current_password=current_password, new_password=new_password),
        )

    def get_profile(self) -> ProfileResponse:
        return self.request(PROFILE_PATH, response_model=ProfileResponse)

    # --- 制品 ---

    def upload_artifact(
        self,
        repo_key: str,
        file_bytes: bytes,
        file_name: str,
        path: Optional[str] = None,
    ) -> Any:
        return self.upload_multipart(
            f"{API_V1}/repositories/{repo_key}/artifacts",
            file_bytes,
            file_name,
            extra_fields={"path": path},
        )

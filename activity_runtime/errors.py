"""
errors.py - 統一エラー基盤

エラーコード体系、ActivityManagerError クラス、ヘルパー関数を提供する。

エラーコード形式: AMGR-{カテゴリ}-{3桁番号}
カテゴリ: REQ, ENT, SYS

設計原則:
- stdlib のみに依存（循環参照を作らない）
- 契約違反（未知の requirement、不正な値）のみ例外として呼び出し元に返す。
  配信失敗はここでは扱わない（boot_status_proxy 内でログに落とす）。
"""

from __future__ import annotations

import enum
import re
import sys
from dataclasses import dataclass
from typing import Any, Dict, Optional


ERROR_CODE_PATTERN = re.compile(r'^AMGR-[A-Z]{2,5}-\d{3}$')


class ErrorCategory(enum.Enum):
    """エラーカテゴリ。

    REQ: Requirement の生成・登録
    ENT: Bus entity の解決
    SYS: 設定などシステム全般
    """

    REQ = "REQ"
    ENT = "ENT"
    SYS = "SYS"


@dataclass(frozen=True)
class ErrorCode:
    """エラーコード定数。テンプレート文字列とデフォルト suggestion を保持する。"""

    code: str
    template: str
    suggestion: Optional[str] = None
    category: Optional[ErrorCategory] = None

    def __post_init__(self) -> None:
        if not ERROR_CODE_PATTERN.match(self.code):
            raise ValueError(
                f"Invalid error code format: {self.code!r}. "
                f"Expected AMGR-{{CATEGORY}}-{{NNN}}"
            )


class ActivityManagerError(Exception):
    """統一エラークラス。

    Attributes:
        code: エラーコード文字列。
        message: 人間可読メッセージ。
        details: 追加情報の dict（任意）。
        suggestion: 解決策の提案（任意）。
    """

    def __init__(
        self,
        code: str,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details
        self.suggestion = suggestion
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """JSON シリアライズ可能な dict を返す（None のキーは含めない）。"""
        result: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            result["details"] = self.details
        if self.suggestion is not None:
            result["suggestion"] = self.suggestion
        return result


# ======================================================================
# エラーコード定数: REQ
# ======================================================================

REQ_UNKNOWN = ErrorCode(
    code="AMGR-REQ-001",
    template="Attempt to instantiate unknown requirement {requirement!r} "
             "(manager {manager}, activity {activity_id})",
    suggestion="Check the requirement name in the Activity definition.",
    category=ErrorCategory.REQ,
)

REQ_INVALID_VALUE = ErrorCode(
    code="AMGR-REQ-002",
    template="If {requirement!r} requirement is specified, the only legal value is 'true' (got {value!r})",
    suggestion="Omit the requirement instead of setting it to false.",
    category=ErrorCategory.REQ,
)

REQ_ALREADY_REGISTERED = ErrorCode(
    code="AMGR-REQ-003",
    template="Requirement {requirement!r} is already provided by {manager}",
    suggestion="Unregister the existing provider first.",
    category=ErrorCategory.REQ,
)

# ======================================================================
# エラーコード定数: ENT
# ======================================================================

ENT_UNKNOWN = ErrorCode(
    code="AMGR-ENT-001",
    template="Bus entity is not known: {entity_id}",
    suggestion="Register the bus entity before mapping it into a container.",
    category=ErrorCategory.ENT,
)

# ======================================================================
# エラーコード定数: SYS
# ======================================================================

SYS_CONFIG_ERROR = ErrorCode(
    code="AMGR-SYS-001",
    template="Configuration error: {reason}",
    suggestion="Check the configuration file and AMGR_* environment variables.",
    category=ErrorCategory.SYS,
)


# ======================================================================
# エラーコードレジストリ（自動収集）
# ======================================================================

_ALL_ERROR_CODES: Dict[str, ErrorCode] = {}


def _register_all() -> None:
    module = sys.modules[__name__]
    for name in dir(module):
        obj = getattr(module, name)
        if isinstance(obj, ErrorCode):
            if obj.code in _ALL_ERROR_CODES:
                raise ValueError(f"Duplicate error code: {obj.code}")
            _ALL_ERROR_CODES[obj.code] = obj


_register_all()


def get_all_error_codes() -> Dict[str, ErrorCode]:
    """登録済みの全エラーコードを ``{code: ErrorCode}`` で返す。"""
    return dict(_ALL_ERROR_CODES)


def format_error(
    code: ErrorCode,
    *,
    details: Optional[Dict[str, Any]] = None,
    suggestion: Optional[str] = None,
    **kwargs: Any,
) -> ActivityManagerError:
    """テンプレートにパラメータを埋め込んで ActivityManagerError を返す。

    Example::

        raise format_error(REQ_INVALID_VALUE, requirement="bootup", value=False)
    """
    try:
        message = code.template.format(**kwargs)
    except KeyError as exc:
        message = f"{code.template} (missing parameter: {exc})"

    return ActivityManagerError(
        code=code.code,
        message=message,
        details=details,
        suggestion=suggestion if suggestion is not None else code.suggestion,
    )

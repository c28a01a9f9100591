"""
Error taxonomy for SafeTrip.

Every failure raised by the core derives from SafeTripError so the
transport layer can map them to responses in one place.
"""


class SafeTripError(Exception):
    """SafeTrip 기본 예외"""


class ValidationError(SafeTripError, ValueError):
    """잘못된 좌표, 누락된 필드, 양수가 아닌 반경 등 (변경 전에 거부)"""


class PermissionDeniedError(SafeTripError, PermissionError):
    """역할이 허용하지 않는 작업 시도"""
    
    def __init__(self, role, capability):
        self.role = role
        self.capability = capability
        super().__init__(f"role '{role}' lacks capability '{capability}'")


class InvalidTransitionError(SafeTripError):
    """허용되지 않은 경보 상태 전이"""
    
    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(f"transition {current} -> {requested} is not permitted")


class NotFoundError(SafeTripError, LookupError):
    """참조된 레코드가 없음"""
    
    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} '{key}' not found")


class CollaboratorError(SafeTripError):
    """RecordStore/NotificationDispatcher 등 외부 협력자 실패 (재시도 가능)"""
    
    retryable = True


class StaleRecordError(CollaboratorError):
    """낙관적 버전 검사 실패 (다른 쓰기가 먼저 커밋됨)"""
    
    def __init__(self, kind: str, key: str, expected_version: int):
        self.kind = kind
        self.key = key
        self.expected_version = expected_version
        super().__init__(f"{kind} '{key}' changed since version {expected_version}")

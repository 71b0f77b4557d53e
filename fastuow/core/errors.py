class FastUoWError(Exception):
    """``FastUoW`` 와 관련된 모든 에러의 기본 클래스."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    ...


class InvalidArgumentError(FastUoWError, ValueError):
    """잘못된 인자가 전달되었을 때 발생하는 에러.

    ``None`` 컨텍스트, ORM에 매핑되지 않은 엔티티 클래스 등.
    """

    ...


class InvalidStateError(FastUoWError, RuntimeError):
    """현재 상태에서 수행할 수 없는 작업을 요청했을 때 발생하는 에러.

    예: 이미 dispose 된 UoW나 닫힌 컨텍스트를 사용하는 경우.
    """

    ...


class ConcurrentCommitError(InvalidStateError):
    """같은 참여자를 대상으로 분산 커밋이 동시에 실행될 때 발생하는 에러."""

    ...

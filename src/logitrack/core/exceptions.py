"""流转异常体系

校验类错误（NotFound / Unauthorized / IllegalTransition）在任何写入前抛出；
PersistenceFailureError 表示任务写入事务已回滚，可在重新校验后重试。
"""


class TransitionError(Exception):
    """状态流转基础异常"""

    code = "TRANSITION_ERROR"

    def __init__(self, message: str, recoverable: bool = False) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class NotFoundError(TransitionError):
    """任务或 booking 不存在"""

    code = "NOT_FOUND"


class TaskNotFoundError(NotFoundError):
    """任务不存在"""

    code = "TASK_NOT_FOUND"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task with id {task_id} does not exist")
        self.task_id = task_id


class BookingNotFoundError(NotFoundError):
    """任务关联的 booking 不存在"""

    code = "BOOKING_NOT_FOUND"

    def __init__(self, booking_id: str) -> None:
        super().__init__(f"Booking with id {booking_id} does not exist")
        self.booking_id = booking_id


class UnauthorizedActorError(TransitionError):
    """操作者不是任务的被分配人"""

    code = "UNAUTHORIZED_ACTOR"

    def __init__(self, task_id: str, actor_id: str) -> None:
        super().__init__(f"Actor {actor_id} is not assigned to task {task_id}")
        self.task_id = task_id
        self.actor_id = actor_id


class IllegalTransitionError(TransitionError):
    """目标状态不可从当前状态到达（包括终态上的任何请求）"""

    code = "ILLEGAL_TRANSITION"

    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(f"Cannot transition from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class PersistenceFailureError(TransitionError):
    """任务写入失败，事务已整体回滚"""

    code = "PERSISTENCE_FAILURE"

    def __init__(self, task_id: str, original_error: Exception) -> None:
        super().__init__(
            f"Failed to persist transition for task {task_id} -- {original_error}",
            recoverable=True,
        )
        self.task_id = task_id
        self.original_error = original_error


class TaskStatusConflictError(TransitionError):
    """CAS 写入失败：任务在读取后已被其他请求修改

    仅在 store 层抛出，由状态机捕获后重新读取并校验。
    """

    code = "TASK_STATUS_CONFLICT"

    def __init__(self, task_id: str, expected_version: int) -> None:
        super().__init__(
            f"Task {task_id} changed concurrently (expected version {expected_version})",
            recoverable=True,
        )
        self.task_id = task_id
        self.expected_version = expected_version


class TaskAlreadyAssignedError(TransitionError):
    """booking 已有关联任务（一个 booking 只对应一个任务）"""

    code = "BOOKING_ALREADY_ASSIGNED"

    def __init__(self, booking_id: str) -> None:
        super().__init__(f"Booking {booking_id} already has an assigned task")
        self.booking_id = booking_id

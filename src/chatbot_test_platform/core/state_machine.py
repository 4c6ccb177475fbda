from enum import Enum


class RunState(Enum):
    """单次场景运行的状态"""
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"


class InvalidTransitionError(RuntimeError):
    pass


class StateMachine:
    """简单的状态机，管理一次运行的状态"""

    def __init__(self, initial_state: RunState = RunState.NOT_STARTED):
        self.state = initial_state
        self.transitions = {
            RunState.NOT_STARTED: {RunState.RUNNING},
            RunState.RUNNING: {RunState.COMPLETED},
            RunState.COMPLETED: set(),
        }

    def can_transition(self, new_state: RunState) -> bool:
        """检查是否可以转移到新状态"""
        return new_state in self.transitions.get(self.state, set())

    def transition(self, new_state: RunState) -> None:
        """转移到新状态，非法转移直接抛错"""
        if not self.can_transition(new_state):
            raise InvalidTransitionError(f"{self.state.value} -> {new_state.value}")
        self.state = new_state

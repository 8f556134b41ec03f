"""Run lifecycle finite state machine for the upload orchestrator.

One FSM instance per orchestrator run. It is purely a validation tool:
the orchestrator fires a transition at each phase boundary and an illegal
sequence raises ``TransitionNotAllowed``. There are no on_enter_state
callbacks -- the work itself stays in :class:`UploadOrchestrator`.
"""

from __future__ import annotations

from statemachine import State, StateMachine


class RunLifecycleSM(StateMachine):
    """Five-state lifecycle of one upload run.

    States:
        idle           -- Orchestrator built, nothing done yet.
        authenticating -- Initial login in flight.
        running        -- Walking pending records.
        draining       -- Logoff and store close.
        finished       -- Summary emitted (or initial login failed). Final.
    """

    idle = State("idle", initial=True, value="idle")
    authenticating = State("authenticating", value="authenticating")
    running = State("running", value="running")
    draining = State("draining", value="draining")
    finished = State("finished", final=True, value="finished")

    start_run = idle.to(authenticating)
    login_succeeded = authenticating.to(running)
    login_failed = authenticating.to(finished)
    begin_drain = running.to(draining)
    complete = draining.to(finished)


def create_run_fsm() -> RunLifecycleSM:
    """Create an FSM positioned at ``idle``."""
    return RunLifecycleSM()

"""
Pure pause/resume transition table for a streaming session.

(flags, requested_pause) -> (new_flags, action)

Rules:
- Pure: no locks, no tasks, no clocks.
- The session applies new_flags and performs the action while holding
  its lock.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum


class PauseAction(str, Enum):
    """
    Side effect requested by a pause/resume call.
    """
    NOOP = "noop"
    CLEAR_PAUSE = "clear_pause"
    RECORD = "record"
    SPAWN = "spawn"


class SessionState(str, Enum):
    """Derived lifecycle state, for status reporting only."""
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    FINISHED = "FINISHED"


@dataclass(frozen=True)
class SessionFlags:
    """Snapshot of the lock-guarded session flags."""
    running: bool = False
    paused: bool = False
    finished: bool = False


def decide_pause(
    flags: SessionFlags,
    paused: bool,
) -> tuple[SessionFlags, PauseAction]:
    """
    Decide what a set_paused(paused) call does.

    - finished: nothing, finished is terminal
    - resume while running: drop a pending pause so the task keeps going
    - pause while stopped: remember it for the next start
    - resume while stopped after a pause: start a new delivery task
    - anything else: record the flag
    """
    if flags.finished:
        return flags, PauseAction.NOOP

    if not paused and flags.running:
        if flags.paused:
            return replace(flags, paused=False), PauseAction.CLEAR_PAUSE
        return flags, PauseAction.NOOP

    if paused and not flags.running:
        return replace(flags, paused=True), PauseAction.RECORD

    if not flags.running and flags.paused and not paused:
        return replace(flags, paused=False), PauseAction.SPAWN

    return replace(flags, paused=paused), PauseAction.RECORD


def derive_state(flags: SessionFlags) -> SessionState:
    """
    Collapse the flags into a single lifecycle state.

    A running task with a pending pause still counts as RUNNING until it
    notices the flag.
    """
    if flags.finished:
        return SessionState.FINISHED
    if flags.running:
        return SessionState.RUNNING
    if flags.paused:
        return SessionState.PAUSED
    return SessionState.IDLE

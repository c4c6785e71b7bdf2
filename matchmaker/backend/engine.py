"""Phase machine for the round table.

A round walks ``OPEN_TOPIC -> CONTESTANT_TURN(i) -> HOST_REPLY(i) -> ... -> PAUSE``
and ``PAUSE`` wraps back to ``OPEN_TOPIC`` of the next round. The machine is
pure: the scheduler performs the I/O for a phase and reports whether it worked.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any


OPEN_TOPIC = "OPEN_TOPIC"
CONTESTANT_TURN = "CONTESTANT_TURN"
HOST_REPLY = "HOST_REPLY"
PAUSE = "PAUSE"


@dataclass(frozen=True)
class RoundPosition:
    phase: str = OPEN_TOPIC
    round: int = 1
    turn_index: int = 0


@dataclass(frozen=True)
class TransitionResult:
    position: RoundPosition
    engine_events: list[dict[str, Any]]


def advance(position: RoundPosition, succeeded: bool, contestant_count: int) -> TransitionResult:
    """Move past the current phase given whether its work succeeded."""
    if position.phase == OPEN_TOPIC:
        return _after_open_topic(position, succeeded, contestant_count)
    if position.phase == CONTESTANT_TURN:
        return _after_contestant_turn(position, succeeded, contestant_count)
    if position.phase == HOST_REPLY:
        return _after_host_reply(position, succeeded, contestant_count)
    if position.phase == PAUSE:
        next_position = RoundPosition(phase=OPEN_TOPIC, round=position.round + 1, turn_index=0)
        return TransitionResult(
            position=next_position,
            engine_events=[
                {"kind": "timing", "timing": "round_end", "round": position.round},
                {"kind": "timing", "timing": "round_start", "round": next_position.round},
            ],
        )
    raise ValueError(f"unknown round phase: {position.phase}")


def _after_open_topic(position: RoundPosition, succeeded: bool, contestant_count: int) -> TransitionResult:
    if not succeeded:
        return TransitionResult(
            position=replace(position, phase=PAUSE),
            engine_events=[{"kind": "topic_skipped", "round": position.round}],
        )
    if contestant_count <= 0:
        return TransitionResult(
            position=replace(position, phase=PAUSE),
            engine_events=[{"kind": "topic_opened", "round": position.round}],
        )
    return TransitionResult(
        position=replace(position, phase=CONTESTANT_TURN, turn_index=0),
        engine_events=[
            {"kind": "topic_opened", "round": position.round},
            {"kind": "timing", "timing": "turn_start", "turnIndex": 0},
        ],
    )


def _after_contestant_turn(position: RoundPosition, succeeded: bool, contestant_count: int) -> TransitionResult:
    if succeeded:
        return TransitionResult(position=replace(position, phase=HOST_REPLY), engine_events=[])
    events: list[dict[str, Any]] = [{"kind": "turn_failed", "turnIndex": position.turn_index}]
    return _next_turn(position, contestant_count, events)


def _after_host_reply(position: RoundPosition, succeeded: bool, contestant_count: int) -> TransitionResult:
    events: list[dict[str, Any]] = []
    if not succeeded:
        events.append({"kind": "turn_failed", "turnIndex": position.turn_index})
    return _next_turn(position, contestant_count, events)


def _next_turn(position: RoundPosition, contestant_count: int, events: list[dict[str, Any]]) -> TransitionResult:
    events.append({"kind": "timing", "timing": "turn_end", "turnIndex": position.turn_index})
    new_turn_index = position.turn_index + 1
    if new_turn_index >= contestant_count:
        return TransitionResult(position=replace(position, phase=PAUSE), engine_events=events)

    events.append({"kind": "timing", "timing": "turn_start", "turnIndex": new_turn_index})
    return TransitionResult(
        position=replace(position, phase=CONTESTANT_TURN, turn_index=new_turn_index),
        engine_events=events,
    )

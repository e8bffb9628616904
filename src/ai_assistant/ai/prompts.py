"""Prompt templates and fixed notices exchanged with the model."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

REPLY_SCHEMA = {
    "reasoning": "Your step by step reasoning about the request, not shown to the user",
    "functionCall": "Name of the function to call, leave empty if no function is needed",
    "functionTextInstructionString": "Plain text instruction for the called function",
    "userResponse": "The message shown to the user",
}

# Notices handed back to the model inside reactivation and tool payloads.
FUNCTION_EXECUTED = "The function was executed, the result is attached."
FUNCTION_NOT_IMPLEMENTED = "The requested function does not exist. Tell the user it is not available."
FUNCTION_TIMEOUT = "The function did not return a result within the time limit."
DELETE_HISTORY_SUCCESS = "The conversation history has been deleted."
CURRENT_VALUE = "Current value: "
CURRENT_TIME = "Current time: "


def format_now(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")


def build_system_prompt(name: str, personality: str, tools: list[dict[str, str]]) -> str:
    """Persona plus the catalog of callable functions and the reply schema."""
    catalog = json.dumps(tools, ensure_ascii=False)
    schema = json.dumps(REPLY_SCHEMA, ensure_ascii=False)
    return (
        f"You are {name}, a home automation assistant. Your personality: {personality}. "
        "You help the user by reading and changing the values of their devices, "
        "scheduling tasks and reacting to value changes. "
        f"You can call the following functions: {catalog}. "
        f"Always answer with exactly one JSON object of this form: {schema}. "
        "Call at most one function per answer. When you call a function you will "
        "receive its result in the next message and can answer the user then. "
        "Never invent device ids, only use the ones the functions report."
    )


def wrap_user_message(text: str, language: str, now: datetime | None = None) -> str:
    return (
        f"{CURRENT_TIME}{format_now(now)} "
        f"Answer in language: {language} "
        f"Message from the user: {text}"
    )


STATES_RESPONSE_FORMAT = {
    "reasoning": "Your reasoning for selecting the datapoints",
    "noticeToAssistant": "Short note for the assistant about what was done",
    "set-states": [{"name": "Name of the device", "id": "Datapoint id", "value": "New value"}],
    "get-states": [{"name": "Name of the device", "id": "Datapoint id"}],
}

SCHEDULER_RESPONSE_FORMAT = {
    "reasoning": "Your reasoning about the schedule",
    "noticeToAssistant": "Short note for the assistant about what was scheduled",
    "createTimeouts": [{"timeoutSeconds": 60, "instruction": "Instruction to execute when the timeout expires"}],
    "createCronjobs": [{"cronExpression": "Cron expression (5 or 6 fields)", "instruction": "Instruction to execute"}],
    "deleteCronjobs": ["Id of a cron job to delete"],
}

TRIGGER_RESPONSE_FORMAT = {
    "reasoning": "Your reasoning about the triggers",
    "noticeToAssistant": "Short note for the assistant about what was changed",
    "createTriggers": [
        {
            "objectId": "Datapoint id to watch",
            "condition": {"operator": "One of > < >= <= == != === !==", "value": "ConditionValue"},
            "onlyOnStateValueChange": True,
            "executeOnlyOnce": False,
            "instruction": "Instruction to execute when the trigger fires",
        }
    ],
    "deleteTriggers": ["Id of a trigger to delete"],
}


def tool_system_prompt(purpose: str, response_format: dict[str, Any]) -> str:
    return (
        f"{purpose} Only use information from the request. "
        "Leave lists empty when there is nothing to do. "
        f"Answer with exactly one JSON object in this format: {json.dumps(response_format, ensure_ascii=False)}"
    )


STATES_PURPOSE = (
    "You select the datapoints that have to be read or written to fulfil an instruction."
)
SCHEDULER_PURPOSE = (
    "You manage timeouts and cron jobs that wake up the assistant with an instruction later."
)
TRIGGER_PURPOSE = (
    "You manage triggers that wake up the assistant with an instruction when a datapoint changes."
)


def states_tool_message(prompt: str, endpoints: str) -> str:
    return (
        f'Select the datapoints for this instruction: "{prompt}". '
        f"Available datapoints: {endpoints} "
        "Answer only with the JSON object."
    )


def scheduler_tool_message(prompt: str, cronjobs: list[dict[str, Any]], now: datetime | None = None) -> str:
    return (
        f"{CURRENT_TIME}{format_now(now)} "
        f"Existing cron jobs: {json.dumps(cronjobs, ensure_ascii=False)} "
        f'Instruction: "{prompt}". '
        "Answer only with the JSON object."
    )


def trigger_tool_message(
    prompt: str, triggers: list[dict[str, Any]], endpoints: str, now: datetime | None = None
) -> str:
    return (
        f"{CURRENT_TIME}{format_now(now)} "
        f"Existing triggers: {json.dumps(triggers, ensure_ascii=False)} "
        f'Instruction: "{prompt}". '
        f"Available datapoints: {endpoints} "
        "Answer only with the JSON object."
    )


def trigger_fired_by_condition(object_id: str, operator: str, value: Any) -> str:
    return f"Trigger on {object_id} fired because the condition {operator} {value} is met."


def trigger_fired(object_id: str) -> str:
    return f"Trigger on {object_id} fired because the value was updated."


def cronjob_fired(cron: str) -> str:
    return f"Cron job with schedule {cron} is due."


def timeout_fired(seconds: Any) -> str:
    return f"Timeout of {seconds} seconds has expired."

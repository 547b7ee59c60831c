"""
Utility tools the QA agents can call next to search: arithmetic and the current date.
"""

from datetime import datetime, timezone
from typing import Annotated

from docqa.agent.tool_registry import tool

_OPERATIONS = {
    "add": lambda a, b: a + b,
    "subtract": lambda a, b: a - b,
    "multiply": lambda a, b: a * b,
    "divide": lambda a, b: a / b,
}


class LocalTools:
    @tool("Performs arithmetic on two numbers (add, subtract, multiply or divide).")
    def calculator(
        self,
        a: Annotated[float, "First number"],
        b: Annotated[float, "Second number"],
        operation: Annotated[str, "Operation to perform [add, subtract, multiply, divide]"] = "add",
    ) -> dict:
        op = (operation or "add").strip().lower()
        if op not in _OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}")
        if op == "divide" and b == 0:
            raise ValueError("Cannot divide by zero")
        return {"operation": op, "a": a, "b": b, "result": _OPERATIONS[op](a, b)}

    @tool("Gets the current date and time.")
    def get_current_date_time(
        self,
        format: Annotated[str, "strftime format for the local date/time"] = "%Y-%m-%d %H:%M:%S",
    ) -> dict:
        now = datetime.now().astimezone()
        return {
            "formatted": now.strftime(format),
            "utc": now.astimezone(timezone.utc).isoformat(),
            "timestamp": int(now.timestamp()),
        }

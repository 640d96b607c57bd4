"""Toolgate quickstart: register two tools, run one, confirm the other."""

import asyncio

from pydantic import BaseModel

from toolgate import InvocationContext, RiskLevel, ToolGate, ToolResult, tool


class NoteInput(BaseModel):
    title: str
    body: str = ""


class EmailInput(BaseModel):
    to: str
    subject: str


@tool("add_note", "Add a note to the current project", NoteInput)
async def add_note(data: NoteInput, ctx: InvocationContext) -> ToolResult:
    return ToolResult.ok({"title": data.title, "project_id": ctx.project_id})


@tool(
    "send_email",
    "Send an email on the user's behalf",
    EmailInput,
    risk_level=RiskLevel.HIGH,
    requires_confirmation=True,
)
async def send_email(data: EmailInput, ctx: InvocationContext) -> ToolResult:
    return ToolResult.ok({"sent_to": data.to})


async def main() -> None:
    gate = ToolGate.from_settings()
    gate.register(add_note)
    gate.register(send_email)

    ctx = InvocationContext(actor_id="user-1", workspace_id="ws-1", project_id="proj-1")

    note = await gate.execute("add_note", {"title": "Kickoff"}, ctx)
    print(f"add_note: {note.data}")

    proposed = await gate.execute("send_email", {"to": "team@example.com", "subject": "Go"}, ctx)
    print(f"send_email pending: {proposed.data['message']}")

    sent = await gate.confirm_and_execute(proposed.data["call_id"], ctx.actor_id)
    print(f"send_email confirmed: {sent.data}")


if __name__ == "__main__":
    asyncio.run(main())

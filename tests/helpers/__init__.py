"""Test doubles for the tool gateway and the chat model."""

from tests.helpers.fake_gateway import FakeGateway, FakeToolHandle, InvocationRecord
from tests.helpers.scripted_model import ScriptedModel, text_step, tool_step

__all__ = [
    "FakeGateway",
    "FakeToolHandle",
    "InvocationRecord",
    "ScriptedModel",
    "text_step",
    "tool_step",
]

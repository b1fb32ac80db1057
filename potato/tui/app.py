"""Potato TUI: Textual application class."""

from __future__ import annotations

from textual.app import App

from potato.adapters.event_bus import EventBus
from potato.engine.controller import TurnController
from potato.tui.screens.chat import ChatScreen


class PotatoApp(App):
    """Terminal UI for chatting with an agent over a notes vault."""

    TITLE = "Potato"
    SUB_TITLE = "Vault Assistant"

    BINDINGS = [
        ("ctrl+q", "quit", "Quit"),
        ("ctrl+c", "stop_turn", "Stop"),
        ("ctrl+n", "new_chat", "New Chat"),
    ]

    def __init__(self, controller: TurnController, bus: EventBus, **kwargs) -> None:
        super().__init__(**kwargs)
        self.controller = controller
        self.bus = bus

    def on_mount(self) -> None:
        self.push_screen(ChatScreen(self.controller, self.bus))

    def action_stop_turn(self) -> None:
        screen = self.screen
        if isinstance(screen, ChatScreen):
            screen.request_stop()

    def action_new_chat(self) -> None:
        screen = self.screen
        if isinstance(screen, ChatScreen):
            screen.request_new_chat()

    async def on_unmount(self) -> None:
        self.bus.close()
        await self.controller.cancel()

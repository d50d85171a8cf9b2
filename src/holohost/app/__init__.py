"""HoloHost process entry point and WebSocket transport."""

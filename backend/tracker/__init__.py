"""Live-roster tracker bot: mirrors who is live into Discord channels."""

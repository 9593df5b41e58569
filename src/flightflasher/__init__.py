"""Flash and pre-configure Raspberry Pi OS SD cards for the flight-tracker display."""

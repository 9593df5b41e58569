"""OS image download, decompression and raw-device writing."""

"""HTTP interface for the laundry job lifecycle."""

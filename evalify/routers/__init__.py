"""HTTP controllers grouped by audience (auth, admin, banks, faculty, student)."""

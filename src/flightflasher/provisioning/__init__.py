"""Boot partition payload: templates, credentials, firmware patches and units."""

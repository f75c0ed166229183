"""HTTP routers for the Reppy server."""

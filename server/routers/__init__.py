"""HTTP routers for the Parlor lobby server."""

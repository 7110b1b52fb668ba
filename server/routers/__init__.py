"""HTTP routers for the Bussfix server."""

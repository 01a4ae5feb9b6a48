"""Application process supervision package."""

"""PawsitiveCheck web app."""

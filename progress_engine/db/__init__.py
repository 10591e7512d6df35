"""Storage backends for the progress engine"""

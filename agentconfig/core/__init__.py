"""Core runtime pieces: settings, storage paths, file utilities, extensions, permissions"""

"""
Small building blocks shared by the listener: event sources and background thread loops.
"""

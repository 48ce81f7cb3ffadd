"""Runtime for the screenshot verification bot.

Reads the environment, builds the discord.py client and hands gateway
events to the handlers in :mod:`verification`.
"""

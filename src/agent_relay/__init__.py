# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""Relay of a single agent conversation to browser viewers over Server-Sent Events."""

__version__ = "0.1.0"

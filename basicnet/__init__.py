"""Feedforward neural networks in numpy."""

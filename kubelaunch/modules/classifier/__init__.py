"""
Classifier Module - Black Box Interface

Purpose: Decide how an operator project is launched
Interface: classify(), OperatorKind
Hidden: Which project files identify each operator type
"""

from .classifier import MAIN_FILE, WATCHES_FILE, OperatorKind, classify

__all__ = ["MAIN_FILE", "OperatorKind", "WATCHES_FILE", "classify"]

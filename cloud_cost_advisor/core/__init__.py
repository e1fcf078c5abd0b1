"""
Core modules for Cloud Cost Advisor.

This package contains usage pattern analysis, confidence scoring,
recommendation and commitment generation, and the approval workflow.
"""

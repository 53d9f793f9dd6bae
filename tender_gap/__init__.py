"""
TenderGap — Rule-driven gap analysis for tender / RFP documents

Scores tender documents (PDF, DOCX, TXT, HTML) against configurable keyword
rules, maps evaluation criteria into fixed JSON templates and drafts answers
to vendor pre-bid queries.
"""

__version__ = "1.0.0"
__author__ = "TenderGap"

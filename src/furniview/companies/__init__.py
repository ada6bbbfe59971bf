"""
Companies and their members.

A company owns furniture records; users reach a company through a
``company_members`` row carrying their role.
"""

from .interfaces import CompanyStore
from .service import CompanyRecord, CompanyRole, CompanyService

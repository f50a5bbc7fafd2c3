"""
Agent version information for the diagnostic agent.

This file contains version information for the agent software, including
the primary version string and other relevant version metadata.
Version follows semantic versioning (https://semver.org/): MAJOR.MINOR.PATCH
"""

# Version components
MAJOR = 0
MINOR = 3
PATCH = 0

# Full version string
__version__ = f"{MAJOR}.{MINOR}.{PATCH}"
__app_name__ = "Diagnostic Agent"

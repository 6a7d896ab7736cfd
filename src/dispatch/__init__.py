"""Entry points for custom action remediation.

- ``handler``: Lambda functions bound to the custom action rules
- ``cli``: operator command line for routing, simulation and action targets
"""

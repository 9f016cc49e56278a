"""Installation of a resolved plan into node_modules.

- plan.py: installable forest and its snapshot
- installer.py: placement with hard links
- bins.py: executable links
- scripts.py / shell.py: lifecycle scripts
"""

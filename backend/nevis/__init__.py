# Nevis Backend

# automix-server: prompt-to-mix generation service
# Package: automix

__version__ = "0.1.0"
__author__ = "automix contributors"
__description__ = "Turns a text prompt or playlist into one harmonically mixed audio file"

# Module structure:
#   - automix.catalog   : Pre-analyzed track library
#   - automix.generate  : Constraint parsing, selection, ordering, playlist matching
#   - automix.render    : ffmpeg rendering engine
#   - automix.jobs      : Job registry
#   - automix.worker    : Background pipeline execution
#   - automix.api       : HTTP routes
#   - automix.client    : Polling client
#   - automix.config    : Configuration management

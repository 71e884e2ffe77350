# Shell state = what the user's shell was doing right before the query.

# Written by the shell integration after each command, read here on demand.
# The daemon never writes it.

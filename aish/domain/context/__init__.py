# This module compiles the system prompt for each query

# +---------------------+
# |  L0 Memory          |   (Persistent facts, small, ~200t)
# |---------------------|
# | Project facts       |
# | Conventions         |
# | Decisions           |
# +---------------------+

# +---------------------+
# |  L1 Topics          |   (Persistent summaries of evicted turns)
# |---------------------|
# | name: summary      |
# +---------------------+

# +---------------------+     +---------------------+
# |  L2 Window          |     |  L3 Shell state     |
# |---------------------|     |---------------------|
# | Recent turns (RAM)  |     | cwd, commands, exit |
# +---------------------+     +---------------------+

#    \    /
#     \  /
#      \/
# +------------------------------+
# |        System prompt         |   (Rebuilt per query)
# |------------------------------|
# | [Memory] [Previous Topics]   |
# | [Shell Context]              |
# | [Recent Conversation Summary]|
# +------------------------------+
#         |
#         v
#   [backend session: resume or start fresh]

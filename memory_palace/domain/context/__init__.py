# This module decides what the model still remembers

# +---------------------+
# |  ConversationState  |   (Every message ever said, with fade levels)
# |---------------------|
# | seq 0  fade 0.00    |
# | seq 1  fade 0.15    |
# | ...                 |
# | seq n  fade 1.00    |
# +---------------------+
#          |
#          |  fade_level > min_fade_level, newest max_count
#          v
# +---------------------+
# |      Context        |   (role/content only, oldest first)
# +---------------------+
#          |
#          v
#   [system framing + context -> generative service]

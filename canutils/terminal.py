"""ANSI escape sequences for colouring and positioning terminal output."""

# reset to default
ATTRESET = "\033[0m"

# attributes
ATTBOLD = "\033[1m"
ATTUNDERLINE = "\033[4m"
ATTBLINK = "\033[5m"
ATTINVERSE = "\033[7m"
ATTINVISIBLE = "\033[8m"

# foreground colours
FGBLACK = "\033[30m"
FGRED = "\033[31m"
FGGREEN = "\033[32m"
FGYELLOW = "\033[33m"
FGBLUE = "\033[34m"
FGMAGENTA = "\033[35m"
FGCYAN = "\033[36m"
FGWHITE = "\033[37m"

# background colours
BGBLACK = "\033[40m"
BGRED = "\033[41m"
BGGREEN = "\033[42m"
BGYELLOW = "\033[43m"
BGBLUE = "\033[44m"
BGMAGENTA = "\033[45m"
BGCYAN = "\033[46m"
BGWHITE = "\033[47m"

# cursor
CSR_HOME = "\033[H"
CSR_UP = "\033[A"
CSR_DOWN = "\033[B"
CSR_RIGHT = "\033[C"
CSR_LEFT = "\033[D"

CSR_HIDE = "\033[?25l"
CSR_SHOW = "\033[?25h"

# clear screen
CLR_SCREEN = "\033[2J"
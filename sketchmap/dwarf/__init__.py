"""Reader for DWARF debug information that maps program counters to files, lines and functions."""